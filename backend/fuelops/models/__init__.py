from .stations import Station, Nozzle, FuelPrice, Tank
from .shifts import Shift
from .readings import Reading
from .handovers import CashHandover
from .settlements import Settlement
from .audit import AuditEvent

__all__ = [
    'Station', 'Nozzle', 'FuelPrice', 'Tank',
    'Shift', 'Reading', 'CashHandover', 'Settlement',
    'AuditEvent',
]

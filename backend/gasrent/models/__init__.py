from .outlets import Outlet
from .cylinders import Cylinder
from .leases import Lease
from .transfers import Transfer

__all__ = [
    'Outlet',
    'Cylinder',
    'Lease',
    'Transfer',
]

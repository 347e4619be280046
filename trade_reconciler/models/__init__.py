# trade_reconciler/models/__init__.py
# Central import registry for Alembic

from trade_reconciler.models.execution import Execution
from trade_reconciler.models.trade import Trade
from trade_reconciler.models.tick_details import TickDetails
from trade_reconciler.models.synchronization import Synchronization

__all__ = ["Execution", "Trade", "TickDetails", "Synchronization"]

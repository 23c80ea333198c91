"""Procedimientos de cambio (prepare/summarize/execute).

Cada módulo implementa `core.interfaces.procedure.Procedure` para un tipo
de cambio concreto.
"""

from core.services.procedures.add_agent_service import AddAgentServicePlan, AddAgentServiceProcedure
from core.services.procedures.download_images import DownloadImagesPlan, DownloadImagesProcedure
from core.services.procedures.update_agent import UpdateAgentPlan, UpdateAgentProcedure, plan_agent_changes

__all__ = [
    "AddAgentServicePlan",
    "AddAgentServiceProcedure",
    "DownloadImagesPlan",
    "DownloadImagesProcedure",
    "UpdateAgentPlan",
    "UpdateAgentProcedure",
    "plan_agent_changes",
]

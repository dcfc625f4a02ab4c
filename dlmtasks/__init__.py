from dlmtasks.nodes import BillMasterAmountTask, build_dlm_services
from dlmtasks.service import DateLastModifiedTasksService

__all__ = ["BillMasterAmountTask", "DateLastModifiedTasksService", "build_dlm_services"]

from curfew.models.activity_log import ActivityLog, ActivitySeverity  # noqa: F401
from curfew.models.child import Child  # noqa: F401
from curfew.models.device import ConsentStatus, Device, LockSource  # noqa: F401
from curfew.models.device_schedule import DeviceSchedule  # noqa: F401
from curfew.models.lock_override import DeviceLockOverride, OverrideMode  # noqa: F401
from curfew.models.network_report import NetworkControlReport  # noqa: F401
from curfew.models.schedule import RestrictionLevel, Schedule  # noqa: F401
from curfew.models.user import User, UserRole  # noqa: F401

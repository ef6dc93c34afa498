from backoffice.models.business_owner import BusinessOwner
from backoffice.models.personal_user import PersonalUser
from backoffice.models.staff import Staff
from backoffice.models.staff_session import StaffSession
from backoffice.models.admin_session import AdminSession
from backoffice.models.staff_activity_log import StaffActivityLog
from backoffice.models.security_audit_log import SecurityAuditLog
from backoffice.models.pin_attempt import PinAttempt

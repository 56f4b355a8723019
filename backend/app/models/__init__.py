from .directory import User, Department, Group, Student, Teacher, Lab, GroupApprover
from .flow import FlowTemplate, FlowStep
from .request import Request, RequestStudent, Approval, ApprovalStep
from .audit import AuditLog

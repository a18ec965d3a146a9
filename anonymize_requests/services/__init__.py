from anonymize_requests.services.dispatch import DispatchCoordinator, InMemoryScheduler, Scheduler
from anonymize_requests.services.mailer import LogMailer, Mailer
from anonymize_requests.services.notifier import ServiceNotifier
from anonymize_requests.services.requests import AnonymizeRequestService

__all__ = [
    "AnonymizeRequestService",
    "DispatchCoordinator",
    "InMemoryScheduler",
    "LogMailer",
    "Mailer",
    "Scheduler",
    "ServiceNotifier",
]

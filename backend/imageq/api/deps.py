from fastapi import Depends, Request

from imageq.core.container import Services
from imageq.services.job_tracker import StatusStore
from imageq.services.producer import Producer


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_store(services: Services = Depends(get_services)) -> StatusStore:
    return services.store


def get_producer(services: Services = Depends(get_services)) -> Producer:
    return services.producer()

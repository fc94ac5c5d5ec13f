from datetime import datetime

from fastapi import APIRouter, Depends

from imageq.api.deps import get_services
from imageq.core.container import Services

router = APIRouter()


@router.get("/")
def health_check():
    """basic liveness check"""
    return {
        "status": "healthy",
        "timestamp": datetime.utcnow().isoformat(),
        "service": "imageq-api"
    }


@router.get("/ready")
def readiness_check(services: Services = Depends(get_services)):
    """readiness check - verifies the status store and the queue broker"""
    checks = {}
    all_healthy = True

    # check database
    try:
        services.store.ping()
        checks["database"] = {"status": "healthy", "message": "connected"}
    except Exception as e:
        checks["database"] = {"status": "unhealthy", "message": str(e)}
        all_healthy = False

    # check redis
    try:
        services.broker.ping()
        checks["redis"] = {"status": "healthy", "message": "connected"}
    except Exception as e:
        checks["redis"] = {"status": "unhealthy", "message": str(e)}
        all_healthy = False

    return {
        "status": "healthy" if all_healthy else "unhealthy",
        "timestamp": datetime.utcnow().isoformat(),
        "checks": checks
    }


@router.get("/metrics")
def get_metrics(services: Services = Depends(get_services)):
    """record counts, queue depths and staging usage"""
    queues = {}
    for name in (services.post_queue, services.binary_queue):
        queues[name] = {
            "ready": services.broker.depth(name),
            "dead_lettered": services.broker.dead_letter_depth(name),
        }

    return {
        "timestamp": datetime.utcnow().isoformat(),
        "jobs": services.store.count_by_status(),
        "queues": queues,
        "staging": services.blobs.usage(),
    }

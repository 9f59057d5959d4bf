"""
PriceActions API Dependencies

The service instance is built once by the app lifespan and injected per request.
"""

from fastapi import HTTPException, Request, status

from pricing.service import PriceActionsService


def get_price_actions_service(request: Request) -> PriceActionsService:
    service = getattr(request.app.state, "price_actions", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Price actions service not initialised",
        )
    return service

from fastapi import APIRouter, Depends, HTTPException, Query, status

from mindcheck.api.deps import get_report_service
from mindcheck.schemas.reports import ReportEmailRequest, ReportEmailResponse, ReportResponse
from mindcheck.services.errors import EmptyRangeError
from mindcheck.services.reports import ReportService

router = APIRouter()

NO_DATA_DETAIL = "No data for this period"


@router.get(
    "/{user_id}",
    response_model=ReportResponse,
    summary="Aggregate a user's completed check-ins over a trailing window.",
)
async def get_report(
    user_id: str,
    period_days: int = Query(30, description="Trailing window in days: 14, 30 or 90."),
    service: ReportService = Depends(get_report_service),
) -> ReportResponse:
    try:
        rendered = await service.build_report(user_id, period_days)
    except EmptyRangeError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NO_DATA_DETAIL) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return ReportResponse.from_domain(rendered)


@router.post(
    "/{user_id}/email",
    response_model=ReportEmailResponse,
    summary="Render the report and send it by email.",
)
async def email_report(
    user_id: str,
    payload: ReportEmailRequest,
    service: ReportService = Depends(get_report_service),
) -> ReportEmailResponse:
    try:
        message_id = await service.email_report(
            user_id,
            payload.period_days,
            recipient=payload.recipient,
        )
    except EmptyRangeError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NO_DATA_DETAIL) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return ReportEmailResponse(message_id=message_id, delivered=message_id is not None)

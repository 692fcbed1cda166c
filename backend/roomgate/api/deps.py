"""FastAPI dependencies for the external clients built at startup"""
from fastapi import Request

from roomgate.services.media_service import MediaService
from roomgate.services.stripe_service import StripePayoutClient


def get_payout_client(request: Request) -> StripePayoutClient:
    return request.app.state.payout_client


def get_media_service(request: Request) -> MediaService:
    return request.app.state.media_service

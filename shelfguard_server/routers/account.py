# Copyright (C) 2024 ShelfGuard Contributors
# SPDX-License-Identifier: GPL-3.0-or-later

"""Account API - trusted devices of the signed-in user."""

from fastapi import APIRouter, Depends, HTTPException, status

from shelfguard_server.auth import get_current_user_id
from shelfguard_server.dependencies import get_device_trust
from shelfguard_server.api.schemas import TrustedDeviceResponse
from shelfguard_server.services.device_trust import DeviceTrustEvaluator

router = APIRouter(prefix="/account", tags=["account"])


@router.get("/devices", response_model=list[TrustedDeviceResponse])
async def list_devices(
    user_id: int = Depends(get_current_user_id),
    trust: DeviceTrustEvaluator = Depends(get_device_trust),
) -> list[TrustedDeviceResponse]:
    """Devices that can sign in without a verification code, most recently used first."""
    devices = await trust.list_devices(user_id)
    return [TrustedDeviceResponse.model_validate(d) for d in devices]


@router.delete("/devices/{device_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_device(
    device_id: int,
    user_id: int = Depends(get_current_user_id),
    trust: DeviceTrustEvaluator = Depends(get_device_trust),
) -> None:
    """Stop trusting a device. Its next login needs a verification code."""
    if not await trust.revoke_device(user_id, device_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Device not found")

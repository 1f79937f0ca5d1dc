"""Shared pytest fixtures for CarCare packages."""

import pytest


@pytest.fixture
def sample_user_row():
    """A durable-store users row as returned by Supabase."""
    return {
        "id": "user_1714554000000_3f9a2c1b7e",
        "name": "Kim Driver",
        "email": "driver@example.com",
        "password": "$2a$12$opaquehash",
        "phone": "010-1234-5678",
        "userType": "CUSTOMER",
        "role": None,
        "shopInfo": None,
        "createdAt": "2024-05-01T09:00:00+00:00",
    }


@pytest.fixture
def sample_shop_owner_row():
    """A shop owner awaiting review, in stored form."""
    return {
        "id": "user_1714557600000_8d0e4a6f21",
        "name": "Park Owner",
        "email": "owner@example.com",
        "password": "$2a$12$opaquehash",
        "phone": None,
        "userType": "SHOP_OWNER",
        "role": None,
        "shopInfo": {
            "shopName": "Fast Fix Motors",
            "businessNumber": "123-45-67890",
            "address": "1 Main St, Seoul",
            "description": "Tyres, brakes and oil changes",
            "status": "PENDING",
            "createdAt": "2024-05-01T10:00:00+00:00",
        },
        "createdAt": "2024-05-01T10:00:00+00:00",
    }


@pytest.fixture
def identity_settings(tmp_path, monkeypatch):
    """Development settings with no durable credentials and a temp data dir."""
    from carcare.identity import IdentityStoreSettings

    for name in ("SUPABASE_URL", "SUPABASE_SERVICE_KEY", "SUPABASE_ANON_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("CARCARE_ENV", "development")
    monkeypatch.setenv("CARCARE_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("CARCARE_SUPER_ADMIN_EMAIL", "root@example.com")
    return IdentityStoreSettings.from_env()

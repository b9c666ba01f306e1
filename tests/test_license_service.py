"""
Tests for license key minting, free key issuance and authentication.
"""

import re
from unittest.mock import patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from captureai.errors import AuthenticationError, CaptureAIError
from captureai.models.db_models import LICENSE_KEY_ALPHABET, User, generate_license_key
from captureai.services.email_service import EmailResult
from captureai.services.license_service import (
    FREE_KEY_CREATED,
    FREE_KEY_EMAIL_FAILED,
    MAX_KEY_ATTEMPTS,
    LicenseService,
)

KEY_PATTERN = re.compile(r"^[A-Z2-9]{4}(-[A-Z2-9]{4}){4}$")


async def count_users(session_factory, email: str) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count(User.id)).where(User.email == email))
        return result.scalar_one()


class TestKeyGeneration:
    def test_key_format(self):
        for _ in range(200):
            key = generate_license_key()
            assert KEY_PATTERN.match(key), key
            assert not set(key) & set("01IO")

    def test_alphabet_excludes_ambiguous_characters(self):
        assert len(LICENSE_KEY_ALPHABET) == 32
        for char in "01IO":
            assert char not in LICENSE_KEY_ALPHABET

    @pytest.mark.asyncio
    async def test_mint_skips_taken_keys(self, db, create_user, email_service):
        taken = await create_user(license_key="AAAA-AAAA-AAAA-AAAA-AAAA")
        service = LicenseService(db, email_service)

        with patch(
            "captureai.services.license_service.generate_license_key",
            side_effect=[taken.license_key, "BBBB-BBBB-BBBB-BBBB-BBBB"],
        ):
            assert await service.mint_unique_key() == "BBBB-BBBB-BBBB-BBBB-BBBB"

    @pytest.mark.asyncio
    async def test_mint_gives_up_after_max_attempts(self, db, create_user, email_service):
        taken = await create_user(license_key="AAAA-AAAA-AAAA-AAAA-AAAA")
        service = LicenseService(db, email_service)

        with patch(
            "captureai.services.license_service.generate_license_key",
            return_value=taken.license_key,
        ) as generator:
            with pytest.raises(CaptureAIError, match="Failed to generate unique license key"):
                await service.mint_unique_key()

        assert generator.call_count == MAX_KEY_ATTEMPTS


class TestCreateFreeKey:
    @pytest.mark.asyncio
    async def test_creates_user_and_emails_key(self, db, session_factory, email_service):
        service = LicenseService(db, email_service)

        response = await service.create_free_key("student@example.com")

        assert response.message == FREE_KEY_CREATED
        assert response.email_failed is False
        assert response.tier == "free"
        assert await count_users(session_factory, "student@example.com") == 1

        email, key, tier = email_service.send_license_key.call_args.args
        assert email == "student@example.com"
        assert KEY_PATTERN.match(key)
        assert tier == "free"

    @pytest.mark.asyncio
    async def test_repeat_request_resends_same_key(self, db, session_factory, email_service):
        service = LicenseService(db, email_service)

        first = await service.create_free_key("student@example.com")
        second = await service.create_free_key("student@example.com")

        assert first == second
        assert await count_users(session_factory, "student@example.com") == 1
        keys = [c.args[1] for c in email_service.send_license_key.call_args_list]
        assert len(keys) == 2
        assert keys[0] == keys[1]

    @pytest.mark.asyncio
    async def test_response_never_contains_key(self, db, email_service):
        service = LicenseService(db, email_service)

        response = await service.create_free_key("student@example.com")
        key = email_service.send_license_key.call_args.args[1]

        assert key not in response.model_dump_json(by_alias=True)

    @pytest.mark.asyncio
    async def test_email_failure_is_reported(self, db, session_factory, email_service):
        email_service.send_license_key.return_value = EmailResult(sent=False, error="boom")
        service = LicenseService(db, email_service)

        response = await service.create_free_key("student@example.com")

        assert response.email_failed is True
        assert response.message == FREE_KEY_EMAIL_FAILED
        # The account still exists so a retry resends the same key
        assert await count_users(session_factory, "student@example.com") == 1

    @pytest.mark.asyncio
    async def test_pro_account_does_not_block_free_key(self, db, session_factory, create_user, email_service):
        await create_user(email="student@example.com", tier="pro", subscription_status="active")
        service = LicenseService(db, email_service)

        await service.create_free_key("student@example.com")

        assert await count_users(session_factory, "student@example.com") == 2

    @pytest.mark.asyncio
    async def test_concurrent_request_resends_winning_key(self, db, session_factory, create_user, email_service):
        service = LicenseService(db, email_service)
        lookup = service.find_free_user_by_email
        winners = []

        async def lookup_while_another_request_inserts(email):
            # The other request commits its row right after this one looked
            if not winners:
                winners.append(await create_user(email=email))
                return None
            return await lookup(email)

        with patch.object(service, "find_free_user_by_email", new=lookup_while_another_request_inserts):
            response = await service.create_free_key("student@example.com")

        assert response.message == FREE_KEY_CREATED
        assert await count_users(session_factory, "student@example.com") == 1
        email_service.send_license_key.assert_awaited_once_with(
            "student@example.com", winners[0].license_key, "free"
        )

    @pytest.mark.asyncio
    async def test_free_email_is_unique_case_insensitively(self, session_factory, create_user):
        await create_user(email="student@example.com")

        with pytest.raises(IntegrityError):
            await create_user(email="Student@Example.com")


class TestValidateKey:
    @pytest.mark.asyncio
    async def test_stamps_last_validated(self, db, create_user, email_service):
        user = await create_user()
        service = LicenseService(db, email_service)

        validated = await service.validate_key(user.license_key)

        assert validated.id == user.id
        assert validated.last_validated_at is not None

    @pytest.mark.asyncio
    async def test_unknown_key(self, db, email_service):
        service = LicenseService(db, email_service)

        with pytest.raises(AuthenticationError, match="Invalid license key"):
            await service.validate_key("ZZZZ-ZZZZ-ZZZZ-ZZZZ-ZZZZ")


class TestAuthenticate:
    @pytest.mark.asyncio
    async def test_valid_free_key(self, db, create_user, email_service):
        user = await create_user()
        service = LicenseService(db, email_service)

        authenticated = await service.authenticate(f"LicenseKey {user.license_key}")
        assert authenticated.id == user.id

    @pytest.mark.asyncio
    async def test_key_is_normalized(self, db, create_user, email_service):
        user = await create_user(license_key="ABCD-EFGH-JKMN-PQRS-TUV2")
        service = LicenseService(db, email_service)

        authenticated = await service.authenticate("LicenseKey abcd-efgh-jkmn-pqrs-tuv2")
        assert authenticated.id == user.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header", [
        None,
        "",
        "LicenseKey",
        "LicenseKey   ",
        "Bearer ABCD-EFGH-JKMN-PQRS-TUV2",
        "licensekey ABCD-EFGH-JKMN-PQRS-TUV2",
        "LicenseKey not-a-key",
        "LicenseKey ZZZZ-ZZZZ-ZZZZ-ZZZZ-ZZZZ",
    ])
    async def test_rejected_headers(self, db, create_user, email_service, header):
        await create_user(license_key="ABCD-EFGH-JKMN-PQRS-TUV2")
        service = LicenseService(db, email_service)

        assert await service.authenticate(header) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["past_due", "cancelled", "inactive"])
    async def test_lapsed_pro_is_rejected(self, db, create_user, email_service, status):
        user = await create_user(tier="pro", subscription_status=status)
        service = LicenseService(db, email_service)

        assert await service.authenticate(f"LicenseKey {user.license_key}") is None

    @pytest.mark.asyncio
    async def test_active_pro_is_accepted(self, db, create_user, email_service):
        user = await create_user(tier="pro", subscription_status="active")
        service = LicenseService(db, email_service)

        authenticated = await service.authenticate(f"LicenseKey {user.license_key}")
        assert authenticated.id == user.id

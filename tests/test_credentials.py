"""
Tests for credential encryption, integration records and money helpers.
"""
from decimal import Decimal

import pytest
from cryptography.fernet import Fernet

from shopsync.config import Settings
from shopsync.models.integration import PlatformIntegration
from shopsync.services.integration_service import IntegrationService
from shopsync.utils.credentials import CredentialCipher, derive_fernet_key
from shopsync.utils.errors import PlatformNotConfiguredError, ValidationError
from shopsync.utils.helpers import divide_half_up, percentage_of, to_minor_units


class TestCredentialCipher:

    def test_round_trip(self, cipher):
        token = cipher.encrypt("shpat_123")
        assert token != "shpat_123"
        assert cipher.decrypt(token) == "shpat_123"

    def test_empty_values_are_not_encrypted(self, cipher):
        assert cipher.encrypt(None) is None
        assert cipher.encrypt("") is None
        assert cipher.decrypt(None) is None

    def test_wrong_key_is_rejected(self, cipher):
        token = cipher.encrypt("shpat_123")
        other = CredentialCipher(Fernet.generate_key())
        with pytest.raises(ValidationError):
            other.decrypt(token)

    def test_derived_key_is_stable(self):
        assert derive_fernet_key("s3cret") == derive_fernet_key("s3cret")
        assert derive_fernet_key("s3cret") != derive_fernet_key("other")
        CredentialCipher(derive_fernet_key("s3cret"))  # valid Fernet key

    def test_from_settings_prefers_explicit_key(self):
        key = Fernet.generate_key().decode()
        explicit = CredentialCipher.from_settings(Settings(credential_encryption_key=key))
        derived = CredentialCipher.from_settings(Settings(credential_encryption_key="", secret_key="abc"))

        assert CredentialCipher(key.encode()).decrypt(explicit.encrypt("x")) == "x"
        assert CredentialCipher(derive_fernet_key("abc")).decrypt(derived.encrypt("y")) == "y"


class TestIntegrationService:

    def test_secrets_are_stored_encrypted(self, db, cipher):
        service = IntegrationService(db, cipher)
        service.save_integration("shopify", {"shop_name": "leatherco", "access_token": "shpat_123", "api_key": "k"})

        row = db.query(PlatformIntegration).one()
        assert row.access_token_encrypted != "shpat_123"
        assert cipher.decrypt(row.access_token_encrypted) == "shpat_123"

    def test_public_view_hides_secrets(self, db, cipher):
        integration = IntegrationService(db, cipher).save_integration(
            "etsy", {"store_id": "s1", "access_token": "tok", "api_secret": "sec"}
        )
        data = integration.to_dict()
        assert data["has_access_token"] is True
        assert data["has_api_secret"] is True
        assert data["has_refresh_token"] is False
        assert "tok" not in str(data)
        assert "sec" not in str(data)

    def test_omitted_secret_is_kept(self, db, cipher):
        service = IntegrationService(db, cipher)
        service.save_integration("ebay", {"access_token": "tok"})
        service.save_integration("ebay", {"api_key": "client"})
        assert cipher.decrypt(service.get_integration("ebay").access_token_encrypted) == "tok"

    def test_new_credentials_clear_reconnect_flag(self, db, cipher):
        service = IntegrationService(db, cipher)
        service.save_integration("amazon", {"access_token": "old", "marketplace_id": "M"})
        service.mark_needs_reconnect("amazon", "credentials rejected")
        assert service.get_integration("amazon").needs_reconnect

        service.save_integration("amazon", {"access_token": "new"})
        integration = service.get_integration("amazon")
        assert not integration.needs_reconnect
        assert integration.last_error is None

    def test_rejects_unknown_fields_and_platforms(self, db, cipher):
        service = IntegrationService(db, cipher)
        with pytest.raises(ValidationError):
            service.save_integration("shopify", {"password": "x"})
        with pytest.raises(ValidationError):
            service.save_integration("direct", {"access_token": "x"})
        with pytest.raises(ValidationError):
            service.save_integration("myspace", {"access_token": "x"})

    def test_missing_integration(self, db, cipher):
        with pytest.raises(PlatformNotConfiguredError):
            IntegrationService(db, cipher).get_integration("etsy")

    def test_connector_gets_encrypted_config(self, db, cipher):
        service = IntegrationService(db, cipher)
        service.save_integration("shopify", {"shop_name": "leatherco", "access_token": "shpat_123"})
        connector = service.build_connector("shopify")

        assert connector.config.shop_name == "leatherco"
        assert connector.config.access_token_encrypted != "shpat_123"
        with connector.unlocked_credentials() as creds:
            assert creds.access_token == "shpat_123"
        assert creds.access_token is None

    def test_platform_info(self, db, cipher):
        service = IntegrationService(db, cipher)
        assert service.get_platform_info("etsy")["configured"] is False
        service.save_integration("etsy", {"access_token": "tok"})
        assert service.get_platform_info("etsy")["configured"] is True
        assert service.get_platform_info("wholesale")["display_name"] == "Wholesale"


class TestMoneyHelpers:

    @pytest.mark.parametrize("amount,expected", [
        ("79.99", 7999),
        (79.99, 7999),
        (Decimal("0.005"), 1),
        ("100", 10000),
        (None, 0),
        ("", 0),
    ])
    def test_to_minor_units(self, amount, expected):
        assert to_minor_units(amount) == expected

    def test_to_minor_units_with_divisor(self):
        assert to_minor_units(7999, divisor=100) == 7999
        assert to_minor_units(79990, divisor=1000) == 7999

    def test_invalid_amount(self):
        with pytest.raises(ValidationError):
            to_minor_units("twelve")

    def test_percentage_and_division_round_half_up(self):
        assert percentage_of(1000, "0.065") == 65
        assert percentage_of(10, "0.05") == 1
        assert divide_half_up(5, 2) == 3
        assert divide_half_up(7, 0) == 0

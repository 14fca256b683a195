import pytest

from app.core.config import Settings
from app.db.session import dispose_engine, init_db


@pytest.fixture
def settings():
    settings = Settings(
        _env_file=None,
        database_url="sqlite://",
        timezone="UTC",
        resend_api_key="re_test",
        twilio_account_sid="AC123",
        twilio_auth_token="secret",
        twilio_phone_number="+15550000000",
    )
    init_db(settings)
    yield settings
    dispose_engine(settings)

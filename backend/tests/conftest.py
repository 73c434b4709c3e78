import asyncio
import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="esim-hub-tests-")


def _set_test_env() -> None:
    defaults = {
        "APP_NAME": "esim-hub-test",
        "ENV": "test",
        "DATABASE_URL": f"sqlite+aiosqlite:///{_DB_DIR}/test.db",
        "REDIS_URL": "redis://localhost:6379/15",
        "ADMIN_API_TOKEN": "admin-test-token",
        "PAYMENT_WEBHOOK_SECRET": "whsec_test_xxx",
        "PAYMENT_API_KEY": "",
        "ESIMACCESS_WEBHOOK_SECRET": "esim-webhook-secret",
        "ESIMACCESS_ACCESS_CODE": "access-code",
        "COMMISSION_LEDGER_URL": "",
        "EMAIL_DISPATCH_URL": "",
        "ACTIVATE_ON_DETAIL_READ": "true",
    }
    for key, value in defaults.items():
        os.environ.setdefault(key, value)


_set_test_env()

import pytest  # noqa: E402

from app.core.db import Base, engine  # noqa: E402
from app.models import idempotency, order, plan, user  # noqa: E402,F401


async def _reset_schema() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture(autouse=True)
def fresh_schema():
    asyncio.run(_reset_schema())
    yield

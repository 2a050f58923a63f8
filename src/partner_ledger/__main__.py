from __future__ import annotations

import uvicorn

from partner_ledger.api.app import create_app
from partner_ledger.core.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        create_app(settings),
        host="0.0.0.0",  # noqa: S104
        port=8000,
        log_config=None,
    )


if __name__ == "__main__":
    main()

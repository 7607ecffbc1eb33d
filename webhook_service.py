#!/usr/bin/env python3
"""
Shim module delegating to signald_webhook.webhook_service.
This file exists to preserve local runs from a source checkout.
"""

from signald_webhook.webhook_service import create_app, main  # noqa: F401


if __name__ == '__main__':
    main()

"""Fruit storefront Flask application."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

from flask import Flask, jsonify

from routes import admin, api, webhooks
from storefront.config import AppConfig, load_env
from storefront.db.session import make_session_factory
from storefront.errors import StorefrontError
from storefront.models import Base
from storefront.services import (
    CatalogService,
    OrderService,
    PaymentProviderClient,
    PaymentService,
    PromotionService,
    ReferralService,
)


def build_components(config: AppConfig, session_factory, payment_client=None, clock=datetime.utcnow) -> dict:
    promotions = PromotionService(session_factory=session_factory, clock=clock)
    referrals = ReferralService(session_factory=session_factory, clock=clock)
    client = payment_client or PaymentProviderClient(
        config.payment_api_base,
        config.payment_secret_key,
        timeout=config.payment_timeout_seconds,
    )
    return {
        "promotions": promotions,
        "referrals": referrals,
        "catalog": CatalogService(promotions, session_factory=session_factory),
        "orders": OrderService(
            promotions,
            referrals,
            base_delivery_fee=config.base_delivery_fee,
            whatsapp_phone=config.whatsapp_phone,
            frontend_url=config.frontend_url,
            session_factory=session_factory,
            clock=clock,
        ),
        "payments": PaymentService(
            client,
            webhook_secret=config.payment_webhook_secret,
            currency=config.currency,
            redirect_url=config.payment_redirect_url,
            session_factory=session_factory,
            clock=clock,
        ),
    }


def create_app(
    config: Optional[AppConfig] = None,
    *,
    session_factory=None,
    payment_client=None,
    clock=datetime.utcnow,
) -> Flask:
    config = config or load_env()
    logging.basicConfig(level=config.log_level.upper(), format="%(asctime)s | %(levelname)s | %(message)s")

    session_factory = session_factory or make_session_factory(config.database_url)
    Base.metadata.create_all(bind=session_factory.engine)

    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.secret_key
    app.config["STOREFRONT_CONFIG"] = config
    app.extensions["storefront_components"] = build_components(config, session_factory, payment_client, clock)

    @app.errorhandler(StorefrontError)
    def handle_storefront_error(exc: StorefrontError):
        return jsonify(exc.to_dict()), exc.status_code

    app.register_blueprint(api.api_bp)
    app.register_blueprint(admin.admin_bp)
    app.register_blueprint(webhooks.webhooks_bp)

    return app


def main() -> None:
    app = create_app()
    app.run(host="0.0.0.0", port=5000, debug=False)


if __name__ == "__main__":
    main()

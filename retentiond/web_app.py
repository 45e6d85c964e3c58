"""
Flask web application exposing the backup retention engine.
"""

import asyncio
import os
from datetime import datetime, timezone
from typing import Optional, Tuple

import structlog
from flask import Flask, Response, jsonify, request
from flask_cors import CORS
from pydantic import ValidationError

from retentiond.monitoring.retention_metrics import RetentionMetricsCollector
from retentiond.storage.retention_config import PolicyOverride
from retentiond.storage.retention_logging import generate_retention_report
from retentiond.storage.retention_manager import RetentionManager, create_retention_manager
from retentiond.storage.retention_models import (
    ConfigurationError, ListingError, PolicyValidationError, RetentionInProgressError, RetentionPolicy
)

logger = structlog.get_logger(__name__)


class RetentionWebApp:
    """Flask application with retention endpoints."""

    def __init__(self, manager: RetentionManager, metrics: Optional[RetentionMetricsCollector] = None):
        self.app = Flask(__name__)
        self.manager = manager
        self.metrics = metrics or manager.metrics or RetentionMetricsCollector()
        manager.metrics = self.metrics

        CORS(self.app)
        self._register_routes()

        logger.info("Retention web application initialized",
                    bucket=manager.catalog.bucket, prefix=manager.config.prefix)

    def _register_routes(self):
        """Register all API routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check endpoint."""
            return jsonify({
                'status': 'healthy',
                'timestamp': datetime.now(timezone.utc).isoformat(),
                'service': 'retentiond'
            })

        @self.app.route('/retention/policy', methods=['GET'])
        def get_policy():
            """Return the default policy and a description of each field. No storage calls."""
            return jsonify(self.manager.describe_policy())

        @self.app.route('/retention/apply', methods=['POST'])
        def apply_retention():
            """
            Apply the retention policy.

            Request body (all fields optional):
            {
                "daily_retention_days": int,
                "weekly_retention_weeks": int,
                "monthly_retention_months": int,
                "max_total_size_bytes": int,
                "max_backup_count": int,
                "dry_run": bool
            }
            camelCase field names are accepted as well.
            """
            try:
                policy, dry_run = self._parse_apply_request()
            except PolicyValidationError as e:
                return jsonify({'error': 'Invalid retention policy', 'details': [str(e)]}), 400

            try:
                result = asyncio.run(self.manager.run_retention(policy=policy, dry_run=dry_run))
            except RetentionInProgressError as e:
                return jsonify({'error': 'Retention already in progress', 'message': str(e)}), 409
            except ListingError as e:
                logger.error("Backup listing failed", error=str(e))
                return jsonify({'error': 'Failed to list backups', 'message': str(e)}), 502
            except ConfigurationError as e:
                logger.error("Retention misconfigured", error=str(e))
                return jsonify({'error': 'Configuration error', 'message': str(e)}), 500

            response = result.to_dict()
            response['report'] = generate_retention_report(result)
            logger.info("Retention applied via API",
                        run_id=result.run_id,
                        deleted=len(result.deleted),
                        errors=len(result.errors))
            return jsonify(response)

        @self.app.route('/metrics', methods=['GET'])
        def metrics():
            """Prometheus metrics endpoint."""
            return Response(self.metrics.get_metrics(), mimetype=self.metrics.content_type)

    def _parse_apply_request(self) -> Tuple[RetentionPolicy, Optional[bool]]:
        """Validate the request body into a policy and a dry-run flag."""
        if request.get_data(cache=True):
            data = request.get_json(silent=True)
            if not isinstance(data, dict):
                raise PolicyValidationError("Request body must be a JSON object")
        else:
            data = {}

        data = dict(data)
        dry_run = data.pop('dry_run', data.pop('dryRun', None))
        if dry_run is not None and not isinstance(dry_run, bool):
            raise PolicyValidationError("dry_run must be a boolean")

        try:
            override = PolicyOverride.model_validate(data)
        except ValidationError as e:
            details = [f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise PolicyValidationError("; ".join(details)) from e
        return override.apply_to(self.manager.policy), dry_run

    def run(self, host: str = '0.0.0.0', port: int = 5000, debug: bool = False):
        """Run the Flask application."""
        logger.info("Starting retention web app", host=host, port=port)
        self.app.run(host=host, port=port, debug=debug)


def create_app(manager: RetentionManager, metrics: Optional[RetentionMetricsCollector] = None) -> Flask:
    """Create the Flask application."""
    return RetentionWebApp(manager, metrics).app


def main():
    """Run the web app; the storage client lives for the whole process."""
    config_path = os.getenv('RETENTION_CONFIG', 'configs/retention.yaml')
    manager = create_retention_manager(config_path, metrics=RetentionMetricsCollector())
    web_app = RetentionWebApp(manager)
    try:
        web_app.run(
            host=os.getenv('RETENTION_HOST', '0.0.0.0'),
            port=int(os.getenv('RETENTION_PORT', '5000'))
        )
    finally:
        asyncio.run(manager.close())


if __name__ == '__main__':
    main()

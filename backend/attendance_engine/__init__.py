"""Attendance Verification & Geofencing Engine - Application Factory."""
import logging
import os
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

# Initialize extensions
db = SQLAlchemy()
migrate = Migrate()

def create_app(config_name: str = None, **config_overrides) -> Flask:
    """Application factory pattern. Keyword arguments override config keys."""
    app = Flask(__name__)

    # Load configuration
    from config import get_config
    config_class = get_config(config_name)
    app.config.from_object(config_class)
    app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Keyed locks (Redis when REDIS_URL is set)
    from attendance_engine.utils.locks import init_locks
    init_locks(app)

    # Worker pools for provider calls
    from attendance_engine.services.verification_service import init_provider_pool
    from attendance_engine.services.punch_service import init_location_pool
    init_provider_pool(app)
    init_location_pool(app)

    # Setup logging
    setup_logging(app)

    # Register error handlers
    register_error_handlers(app)

    # Setup database
    setup_database(app)

    # Add CLI commands
    register_commands(app)

    # Add health check
    @app.route('/health')
    def health_check():
        return jsonify({
            'status': 'healthy',
            'service': 'Attendance Verification Engine',
            'version': '1.0.0'
        })

    return app

def register_error_handlers(app: Flask) -> None:
    """Register error handlers."""
    from attendance_engine.utils.helpers import handle_error, error_payload
    from attendance_engine.utils.errors import AttendanceError
    from werkzeug.exceptions import HTTPException

    @app.errorhandler(AttendanceError)
    def attendance_error(error):
        return jsonify(error_payload(error)), error.status_code

    @app.errorhandler(400)
    def bad_request(error):
        return handle_error(error, 400)

    @app.errorhandler(404)
    def not_found(error):
        return handle_error(error, 404)

    @app.errorhandler(500)
    def internal_error(error):
        db.session.rollback()
        return handle_error(error, 500)

    @app.errorhandler(HTTPException)
    def handle_exception(e):
        return handle_error(e, e.code)

def setup_logging(app: Flask) -> None:
    """Setup application logging."""
    level = getattr(logging, app.config.get('LOG_LEVEL', 'INFO'), logging.INFO)
    logging.getLogger('attendance_engine').setLevel(level)

    if not app.debug and not app.testing:
        log_file = app.config.get('LOG_FILE', 'logs/app.log')
        log_dir = os.path.dirname(log_file)
        if log_dir and not os.path.exists(log_dir):
            os.makedirs(log_dir)

        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
        ))
        file_handler.setLevel(level)
        app.logger.addHandler(file_handler)
        logging.getLogger('attendance_engine').addHandler(file_handler)

        app.logger.setLevel(level)
        app.logger.info('Attendance Verification Engine startup')

def setup_database(app: Flask) -> None:
    """Setup database connections."""
    with app.app_context():
        # Import all models so they register with the metadata
        from attendance_engine.models import (
            GeofenceZone,
            VerificationSession, VerificationAttempt,
            TemporaryWorkplaceRecord, ReusableWorkplace,
            ApprovalRequest
        )

def register_commands(app: Flask) -> None:
    """Register CLI commands."""
    import click

    @app.cli.command('init-db')
    @click.option('--drop', is_flag=True, help='Drop existing tables')
    def init_db(drop):
        """Initialize the database."""
        if drop:
            db.drop_all()
            click.echo('Dropped all tables.')

        db.create_all()
        click.echo('Created all tables.')

    @app.cli.command('seed-zones')
    def seed_zones():
        """Seed the zone registry with sample work zones."""
        from attendance_engine.models.geofence_zone import GeofenceZone

        samples = [
            ('Main Office', 37.7749, -122.4194, 100, '123 Main St, San Francisco, CA', True,
             ['geolocation', 'qr', 'facial']),
            ('Branch Office', 37.7849, -122.4094, 150, '456 Branch Ave, San Francisco, CA', True,
             ['geolocation', 'qr']),
            ('Warehouse', 37.7649, -122.4294, 200, '789 Warehouse Blvd, San Francisco, CA', False,
             ['geolocation']),
        ]

        created = 0
        for name, lat, lng, radius, address, active, methods in samples:
            if GeofenceZone.query.filter_by(name=name).first():
                continue
            zone = GeofenceZone(
                name=name,
                center_lat=lat,
                center_lng=lng,
                radius_meters=radius,
                address=address,
                is_active=active,
                allowed_methods=methods
            )
            db.session.add(zone)
            created += 1

        db.session.commit()
        click.echo(f'Seeded {created} zones.')

    @app.cli.command('pending-approvals')
    @click.option('--manager', 'manager_id', default=None, help='Only requests for this manager')
    @click.option('--type', 'request_type', default=None, help='Only requests of this type')
    def pending_approvals(manager_id, request_type):
        """List pending approval requests."""
        from attendance_engine.services.approval_service import ApprovalWorkflow

        requests = ApprovalWorkflow().pending(request_type=request_type, manager_id=manager_id)
        if not requests:
            click.echo('No pending requests.')
            return

        for request in requests:
            click.echo(
                f'{request.id}  {request.type.value:<20} user={request.user_id} '
                f'requested={request.requested_at.isoformat()}  {request.reason}'
            )

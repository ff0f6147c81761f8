import click
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from config import config

db = SQLAlchemy()


def create_app(config_name='default', overrides=None):
    """Application factory — creates and configures the Flask app."""
    app = Flask(__name__)
    app.config.from_object(config[config_name])
    if overrides:
        app.config.update(overrides)

    # ── Logging ───────────────────────────────────────────────────
    from portal.utils.logging import setup_logging
    setup_logging(app)

    # ── Extensions ────────────────────────────────────────────────
    db.init_app(app)
    _import_models()

    # ── Workflow collaborators ────────────────────────────────────
    from portal.workflow.locks import RequisitionLocks
    from portal.workflow.notifications import init_notifications
    from portal.workflow.attachments import init_attachment_store
    app.extensions['requisition_locks'] = RequisitionLocks()
    init_notifications(app)
    init_attachment_store(app)

    # ── Blueprints ────────────────────────────────────────────────
    from portal.main import main as main_blueprint
    app.register_blueprint(main_blueprint)

    from portal.auth import auth as auth_blueprint
    app.register_blueprint(auth_blueprint, url_prefix='/auth')

    from portal.api import requisitions as requisitions_blueprint
    app.register_blueprint(requisitions_blueprint, url_prefix='/api/requisitions')

    from portal.admin import admin as admin_blueprint
    app.register_blueprint(admin_blueprint, url_prefix='/admin')

    from portal.reports import reports as reports_blueprint
    app.register_blueprint(reports_blueprint, url_prefix='/reports')

    # ── Error Handlers ────────────────────────────────────────────
    from portal.errors import WorkflowError

    @app.errorhandler(WorkflowError)
    def workflow_error(e):
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(401)
    def unauthorized(e):
        return jsonify({'error': 'not_authenticated', 'message': 'Please log in.'}), 401

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({'error': 'forbidden', 'message': 'Access denied.'}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'error': 'not_found', 'message': 'Resource not found.'}), 404

    @app.errorhandler(413)
    def too_large(e):
        return jsonify({'error': 'too_large', 'message': 'Attachment exceeds the upload limit.'}), 413

    @app.errorhandler(500)
    def internal_error(e):
        db.session.rollback()
        return jsonify({'error': 'server_error', 'message': 'Server error.'}), 500

    # ── CLI Commands ──────────────────────────────────────────────
    register_commands(app)

    return app


def register_commands(app):
    """Register custom Flask CLI commands."""

    @app.cli.command('init-db')
    def init_db():
        """Create all database tables."""
        _import_models()
        db.create_all()
        click.echo('✅  Database tables created.')

    @app.cli.command('show-sequences')
    def show_sequences():
        """Show current requisition number counters (diagnostic)."""
        from portal.requisitions.models import RequisitionSequence
        rows = (RequisitionSequence.query
                .order_by(RequisitionSequence.period.desc(), RequisitionSequence.dept_code)
                .all())
        if not rows:
            click.echo('No sequence rows found. Submit a requisition first.')
            return
        click.echo(f'{"Dept":<8} {"Period":<8} {"Last Seq":<10} {"Next Number"}')
        click.echo('─' * 45)
        for row in rows:
            click.echo(f'{row.dept_code:<8} {row.period:<8} {row.last_seq:<10} '
                       f'{row.format_number(row.last_seq + 1)}')

    @app.cli.command('seed-admin')
    @click.option('--name',     prompt='Full name',  help='Admin full name')
    @click.option('--username', prompt='Username',   help='Admin username')
    @click.option('--password', prompt=True, hide_input=True,
                  confirmation_prompt=True, help='Admin password')
    def seed_admin(name, username, password):
        """Create the initial admin user."""
        from portal.auth.models import User, RoleEnum

        if User.query.filter_by(username=username).first():
            click.echo(f'⚠️  User "{username}" already exists.')
            return

        admin = User(name=name, username=username, role=RoleEnum.admin)
        admin.set_password(password)
        db.session.add(admin)
        db.session.commit()
        click.echo(f'✅  Admin user "{username}" created successfully.')

    @app.cli.command('seed-demo')
    def seed_demo():
        """Populate the database with demo users and routing policies."""
        from decimal import Decimal
        from portal.auth.models import User, RoleEnum
        from portal.routing.models import RoutingTier, RoutingApprover

        click.echo('🌱 Seeding demo data...')
        _import_models()
        db.create_all()

        people = [
            ('admin',     'Admin User',       RoleEnum.admin,     None),
            ('priya',     'Priya Requester',  RoleEnum.requester, 'Production'),
            ('arjun',     'Arjun Requester',  RoleEnum.requester, 'Finance'),
            ('sup.prod',  'Production Supervisor', RoleEnum.approver, 'Production'),
            ('sup.fin',   'Finance Supervisor',    RoleEnum.approver, 'Finance'),
            ('head.fin',  'Finance Head',          RoleEnum.approver, 'Finance'),
            ('cfo',       'Chief Financial Officer', RoleEnum.approver, 'Finance'),
        ]
        users = {}
        for username, name, role, department in people:
            user = User.query.filter_by(username=username).first()
            if user is None:
                user = User(name=name, username=username, role=role, department=department)
                user.set_password('demo123')
                db.session.add(user)
            users[username] = user
        db.session.flush()
        click.echo('✅ Users ready (password: demo123).')

        if RoutingTier.query.count() == 0:
            db.session.add_all([
                RoutingTier(department='Production', min_total=Decimal('0'), max_level=1),
                RoutingTier(department='Finance', min_total=Decimal('0'), max_level=2),
                RoutingTier(department='Finance', min_total=Decimal('100000'), max_level=3),
                RoutingApprover(department='Production', level=1, approver_id=users['sup.prod'].id),
                RoutingApprover(department='Finance', level=1, approver_id=users['sup.fin'].id),
                RoutingApprover(department='Finance', level=2, approver_id=users['head.fin'].id),
                RoutingApprover(department='Finance', level=3, approver_id=users['cfo'].id),
            ])
            click.echo('✅ Routing policies seeded (Production: 1 level, Finance: 2, 3 above 100000).')

        db.session.commit()
        click.echo('✅ Demo seed complete.')

    @app.cli.command('verify-ledger')
    @click.option('--repair', is_flag=True, help='Rewrite mismatched projections from the ledger.')
    def verify_ledger(repair):
        """Fold every requisition's ledger and compare it with the cached projection."""
        from portal.requisitions.models import Requisition
        from portal.ledger.ledger import verify, heal

        mismatches = 0
        for requisition in Requisition.query.order_by(Requisition.id).all():
            cached, folded = verify(requisition)
            if cached == folded:
                continue
            mismatches += 1
            click.echo(f'❌ #{requisition.id} cached={cached} ledger={folded}')
            if repair:
                heal(requisition)
        if repair and mismatches:
            db.session.commit()
            click.echo(f'✅ Repaired {mismatches} projection(s).')
        elif mismatches:
            click.echo(f'⚠️  {mismatches} projection(s) disagree with the ledger. Re-run with --repair.')
        else:
            click.echo('✅ All projections match the ledger.')

    @app.cli.command('remind-overdue')
    @click.option('--hours', type=int, default=None,
                  help='Waiting time before a reminder (defaults to REMINDER_AFTER_HOURS).')
    def remind_overdue(hours):
        """Send reminders for requisitions waiting too long on one approver."""
        from portal.workflow.reminders import send_overdue_reminders

        hours = hours if hours is not None else app.config['REMINDER_AFTER_HOURS']
        sent = send_overdue_reminders(hours)
        click.echo(f'✅ {sent} reminder(s) sent for requisitions waiting over {hours}h.')

    return app


def _import_models():
    """Importing the model modules registers their tables with db.metadata."""
    import portal.auth.models          # noqa: F401
    import portal.requisitions.models  # noqa: F401
    import portal.ledger.models        # noqa: F401
    import portal.routing.models       # noqa: F401

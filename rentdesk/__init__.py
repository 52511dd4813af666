# rentdesk/__init__.py
import os
import logging # Para logging a archivo
from logging.handlers import RotatingFileHandler # Para logging a archivo
import atexit  # Para cerrar el scheduler limpiamente

from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from sqlalchemy.exc import OperationalError # Para manejar error de BD al inicio
from werkzeug.exceptions import HTTPException
from apscheduler.schedulers.background import BackgroundScheduler

# --- Instancias de Extensiones Globales ---
db = SQLAlchemy()
migrate = Migrate()

__version__ = "1.4.0"

# --- Constantes para los nombres de meses ---
MONTH_NAMES = ["", "Ianuarie", "Februarie", "Martie", "Aprilie", "Mai", "Iunie",
               "Iulie", "August", "Septembrie", "Octombrie", "Noiembrie", "Decembrie"]


def _env_flag(name, default):
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


# --- Factory de la Aplicación ---
def create_app(test_config=None, instance_path=None):
    """Crea y configura la instancia de la aplicación Flask."""
    app = Flask(
        __name__,
        instance_path=instance_path,
        instance_relative_config=instance_path is None,
    )

    # --- Crear Carpeta de Instancia si no existe ---
    try:
        os.makedirs(app.instance_path, exist_ok=True)
    except OSError as e:
        app.logger.error(f"ERROR: No se pudo crear la carpeta de instancia en '{app.instance_path}': {e}")

    # --- Configuración Principal de la Aplicación ---
    db_path = os.path.join(app.instance_path, 'rentdesk.db')
    app.config.from_mapping(
        SECRET_KEY=os.environ.get('FLASK_SECRET_KEY', 'cambia-esta-clave-en-produccion'),
        SQLALCHEMY_DATABASE_URI=os.environ.get('DATABASE_URL', f"sqlite:///{db_path}"),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        STORAGE_BACKEND=os.environ.get('RENTDESK_STORAGE', 'db'),  # 'db' | 'local'
        LOCAL_DATA_DIR=os.environ.get('RENTDESK_DATA_DIR', os.path.join(app.instance_path, '.data')),
        EXCHANGE_FETCH_TIMEOUT=float(os.environ.get('EXCHANGE_FETCH_TIMEOUT', 10)),
        EXCHANGE_DEFAULT_RATE=float(os.environ.get('EXCHANGE_DEFAULT_RATE', 5.0)),
        INFLATION_FETCH_TIMEOUT=float(os.environ.get('INFLATION_FETCH_TIMEOUT', 20)),
        HICP_REFRESH_HOURS=float(os.environ.get('HICP_REFRESH_HOURS', 24)),
        CRON_SECRET=os.environ.get('CRON_SECRET') or None,
        SCHEDULER_ENABLED=_env_flag('RENTDESK_SCHEDULER', 'true'),
        INDEXING_REMINDER_DAYS=(60, 30, 20),
        EXPIRY_WARNING_DAYS=90,
        MONTH_NAMES=MONTH_NAMES,
    )
    if test_config:
        app.config.update(test_config)
    app.logger.info(f"Base de datos configurada en: {app.config['SQLALCHEMY_DATABASE_URI']}")

    # --- Inicializar Extensiones ---
    db.init_app(app)
    migrate.init_app(app, db)

    # --- Crear tablas y carpetas de datos ---
    with app.app_context():
        from .models import initialize_database
        try:
            initialize_database()
        except OperationalError as e:
            app.logger.error(f"No se pudo inicializar la base de datos: {e}", exc_info=True)

    # --- Configurar Logging a Archivo ---
    if not app.debug and not app.testing:
        log_dir = os.path.join(app.instance_path, 'logs') # Logs dentro de la carpeta de instancia
        try:
            os.makedirs(log_dir, exist_ok=True)
            log_file = os.path.join(log_dir, 'rentdesk.log')
            file_handler = RotatingFileHandler(log_file, maxBytes=102400, backupCount=5) # 100KB por log, 5 backups
            file_handler.setFormatter(logging.Formatter(
                '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
            ))
            file_handler.setLevel(logging.INFO)
            app.logger.addHandler(file_handler)
            app.logger.setLevel(logging.INFO)
            app.logger.info('RentDesk iniciado (logging configurado)')
        except OSError as e_log:
            app.logger.error(f"ERROR configurando logging a archivo: {e_log}")

    # --- Inicializar APScheduler ---
    # En modo debug con reloader solo arranca en el proceso hijo.
    scheduler_wanted = app.config['SCHEDULER_ENABLED'] and not app.testing
    if scheduler_wanted and (not app.debug or os.environ.get('WERKZEUG_RUN_MAIN') == 'true'):
        scheduler = BackgroundScheduler(daemon=True, timezone='Europe/Bucharest')

        from .tasks import refresh_exchange_rates, check_indexing_reminders, check_expiring_contracts

        scheduler.add_job(
            func=check_indexing_reminders,
            args=[app],
            trigger="cron",
            hour=2,
            minute=0,
            id='check_indexing_reminders'
        )
        scheduler.add_job(
            func=check_expiring_contracts,
            args=[app],
            trigger="cron",
            hour=2,
            minute=15,
            id='check_expiring_contracts'
        )
        scheduler.add_job(
            func=refresh_exchange_rates,
            args=[app],
            trigger="cron",
            hour=9,
            minute=0,
            id='refresh_exchange_rates'
        )

        scheduler.start()
        app.logger.info("APScheduler iniciado y tareas programadas.")
        atexit.register(lambda: scheduler.shutdown())

    # --- Errores HTTP como JSON ---
    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        return jsonify({'error': e.description}), e.code

    # --- Registrar Blueprints ---
    from .routes.main import main_bp
    from .routes.owners import owners_bp
    from .routes.partners import partners_bp
    from .routes.assets import assets_bp
    from .routes.contracts import contracts_bp
    from .routes.deposits import deposits_bp
    from .routes.invoices import invoices_bp
    from .routes.exchange import exchange_bp
    from .routes.inflation import inflation_bp
    from .routes.messages import messages_bp
    from .routes.cron import cron_bp

    app.register_blueprint(main_bp,      url_prefix='/api')
    app.register_blueprint(owners_bp,    url_prefix='/api/owners')
    app.register_blueprint(partners_bp,  url_prefix='/api/partners')
    app.register_blueprint(assets_bp,    url_prefix='/api/assets')
    app.register_blueprint(contracts_bp, url_prefix='/api/contracts')
    app.register_blueprint(deposits_bp,  url_prefix='/api')
    app.register_blueprint(invoices_bp,  url_prefix='/api')
    app.register_blueprint(exchange_bp,  url_prefix='/api')
    app.register_blueprint(inflation_bp, url_prefix='/api/inflation')
    app.register_blueprint(messages_bp,  url_prefix='/api/messages')
    app.register_blueprint(cron_bp,      url_prefix='/api/cron')

    return app

# High-Beam Enforcement: database models
# Import all models here for SQLAlchemy discovery

from app.models.vehicle import Vehicle                 # noqa
from app.models.violation import Violation             # noqa
from app.models.payment import Payment                 # noqa
from app.models.detection_log import DetectionLog      # noqa

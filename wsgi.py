from app import create_app
from scheduler import start_scheduler
from utils.payment_engine import init_payment_engine

app = create_app()
# fail at boot on missing REDIS_URL / WEB3_PROVIDER rather than on the first job
init_payment_engine(app)
start_scheduler(app)

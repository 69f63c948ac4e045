# module bag2go.app
from bag2go.app_setup.factory import create_app

app = create_app()

import os
import sys

from mangum import Mangum

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from wagering.api import create_app  # noqa: E402

app = create_app(root_path="/api")

handler = Mangum(app)

# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from piste.database import import_models

import_models()

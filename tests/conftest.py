import os
import tempfile

# keep get_settings() from creating ./data in the working tree
os.environ.setdefault("BUDGET_DATA_DIR", tempfile.mkdtemp(prefix="budget-tests-"))

import os
from decimal import Decimal
from dotenv import load_dotenv

load_dotenv() # Optional: Load .env file

# Gateway amounts are integers in the currency's minor unit (pence)
MINOR_UNITS_PER_MAJOR = int(os.getenv("MINOR_UNITS_PER_MAJOR", "100"))
# Largest accepted difference between a submitted and a recomputed total
TOTAL_TOLERANCE = Decimal(os.getenv("TOTAL_TOLERANCE", "0.01"))

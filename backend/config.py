import os
from dotenv import load_dotenv

load_dotenv()

# "supabase" talks to the hosted tables; "memory" keeps everything in-process
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "memory").strip().lower()

SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")

# Grocery ledger lives in a separate hosted project
LEDGER_URL = os.getenv("LEDGER_URL", "")
LEDGER_ANON_KEY = os.getenv("LEDGER_ANON_KEY", "")
LEDGER_TOTAL_FN = os.getenv("LEDGER_TOTAL_FN", "groceries_total_wrapper")
LEDGER_DETAIL_FN = os.getenv("LEDGER_DETAIL_FN", "groceries_detail_wrapper_b")

REQUEST_TIMEOUT = float(os.getenv("REQUEST_TIMEOUT", "30"))
OUTPUT_DIR = os.getenv("OUTPUT_DIR", "/tmp/payout_statements")
LOCAL_CURRENCY = os.getenv("LOCAL_CURRENCY", "COP")
DEFAULT_PERCENT = float(os.getenv("DEFAULT_PERCENT", "60"))

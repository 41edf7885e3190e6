#!/usr/bin/env python3
"""
Print the user_pro_status DDL so it can be added as a Supabase migration:
    python -m scripts.print_schema > supabase/migrations/<timestamp>_user_pro_status.sql
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database.schema import SCHEMA


if __name__ == "__main__":
    print(SCHEMA.strip())

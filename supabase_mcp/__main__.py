import sys

from supabase_mcp.server import main

sys.exit(main())

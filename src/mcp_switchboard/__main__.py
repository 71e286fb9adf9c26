import sys

from mcp_switchboard.main import main

sys.exit(main())

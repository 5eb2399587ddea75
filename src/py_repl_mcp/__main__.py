import sys

from py_repl_mcp import main

sys.exit(main())

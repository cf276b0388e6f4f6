import sys

from character_agent.main import main

sys.exit(main())

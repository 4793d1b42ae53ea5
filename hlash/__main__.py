import sys

from hlash.main import main

sys.exit(main())

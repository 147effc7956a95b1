import sys

from apcsplitter.service import main

sys.exit(main())

import sys

from skyrapport.cli import main

sys.exit(main())

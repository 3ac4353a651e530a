import sys

from msir_metapop.cli import main

sys.exit(main())

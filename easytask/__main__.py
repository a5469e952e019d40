import sys
from easytask.main import main

sys.exit(main())

import sys

from webcam_timelapse.cli import main

sys.exit(main())

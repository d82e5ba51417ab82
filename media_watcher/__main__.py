from media_watcher.main import main

raise SystemExit(main())

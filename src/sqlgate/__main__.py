from sqlgate.cli.main import main

raise SystemExit(main())

from dxbench.cli import main

raise SystemExit(main())

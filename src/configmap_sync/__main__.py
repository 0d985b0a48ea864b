from configmap_sync.cli import main

main()

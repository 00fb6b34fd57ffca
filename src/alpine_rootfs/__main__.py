from alpine_rootfs.cli import main

main()

"""Run the harbor-resource command line tool."""

from harbor_resource.tool.harbor_resource import main

if __name__ == "__main__":
    main()

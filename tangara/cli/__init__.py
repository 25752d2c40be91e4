"""The tangara command and its console, flash and update subcommands."""
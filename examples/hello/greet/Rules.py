rules.sources("greet.c")
rules.targets("libgreet.a")
rules.depends("libgreet.a", "greet.o")

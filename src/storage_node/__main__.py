from .service_runner import main

main()
